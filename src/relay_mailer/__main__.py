# =============================================================================
# relay-mailer Entry Point for `python -m relay_mailer`
# =============================================================================
# Equivalent to running the 'relay-mailer' command after installation.
# =============================================================================

import sys

from relay_mailer.app import main

if __name__ == "__main__":
    sys.exit(main())
