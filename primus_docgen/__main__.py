"""Allow running as: python -m primus_docgen"""

from primus_docgen.main import run

if __name__ == "__main__":
    run()
