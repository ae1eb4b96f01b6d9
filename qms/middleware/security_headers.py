"""
Security headers middleware.

The API serves JSON and file downloads only, so the policy denies framing
and every content source.

Usage:
    from qms.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        response.headers.setdefault(
            "Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"
        )
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")

        # HTTPS enforcement (ignored over HTTP, but ready for production)
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )
        response.headers.setdefault("Referrer-Policy", "no-referrer")

        # Downloads (evidence packs, backups listings) must not be cached by proxies
        if response.mimetype in ("application/pdf",) or "attachment" in response.headers.get(
            "Content-Disposition", ""
        ):
            response.headers.setdefault("Cache-Control", "no-store")

        response.headers.pop("Server", None)
        return response
