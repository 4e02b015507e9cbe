"""Allow `python -m featureloop`."""

from .cli import main

if __name__ == "__main__":
    main()
