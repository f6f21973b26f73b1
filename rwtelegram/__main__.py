"""Entry point for running rwtelegram as a module."""

from rwtelegram.cli import main

if __name__ == '__main__':
    main()
