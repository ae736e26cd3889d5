from werkzeug.middleware.proxy_fix import ProxyFix

from app.stablecrm import create_app

app = create_app()
# One reverse proxy (platform load balancer) in front of gunicorn.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore[method-assign]
