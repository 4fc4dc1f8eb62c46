"""Package entry point for ``python -m clipcast``.

WHY: Users run ``python -m clipcast plan words.json ...`` or
``python -m clipcast serve`` without installing the console script.

HOW: Delegates to the CLI's main() function.
"""

from clipcast.cli import main

if __name__ == "__main__":
    main()
