import os

from dotenv import load_dotenv

from wahook.cli.commands import app

# Load .env file from ~/.wahook/ if it exists
# Precedence: existing env vars > .env file (override=False)
load_dotenv(os.path.expanduser("~/.wahook/.env"), override=False)

if __name__ == "__main__":
    app()
