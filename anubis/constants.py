"""Names, paths and defaults shared across the package."""

from datetime import timedelta

# Overridden by release builds; "devel" marks a development build.
VERSION = "devel"

# Name of the cookie used to validate access.
COOKIE_NAME = "techaro.lol-anubis-auth"

# Prefix of the per-domain cookie used when a cookie domain is configured.
WITH_DOMAIN_COOKIE_NAME = "techaro.lol-anubis-auth-for-"

TEST_COOKIE_NAME = "techaro.lol-anubis-cookie-test-if-you-block-this-anubis-wont-work"

# Time before the cookie/JWT expires.
COOKIE_DEFAULT_EXPIRATION_TIME = timedelta(days=7)

# Global prefix for all endpoints; may be emptied to remove the prefix.
BASE_PREFIX = ""

# Location of all static assets.
STATIC_PATH = "/.within.website/x/cmd/anubis/"

# Location of all API endpoints.
API_PREFIX = "/.within.website/x/cmd/anubis/api/"

# Default number of leading zeroes a client must produce to pass the challenge.
DEFAULT_DIFFICULTY = 4