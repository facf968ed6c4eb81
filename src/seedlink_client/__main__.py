"""
Allow running seedlink_client with python -m
"""

from .cli import run

if __name__ == '__main__':
    run()
