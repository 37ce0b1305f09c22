"""Entry point: python -m autopilot"""

from autopilot.cli import app

if __name__ == "__main__":
    app()
