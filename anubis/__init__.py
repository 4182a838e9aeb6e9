"""Bot-filtering building blocks: WSGI middleware, an expiring map, DNS blocklist lookups and robots.txt conversion."""

__version__ = "0.1.0"