from .console import ConsoleFormatter, ConsoleColors, init_console

__all__ = [
    'ConsoleFormatter',
    'ConsoleColors',
    'init_console',
]
