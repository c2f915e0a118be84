"""Default file contents for incomplete bundles."""

from __future__ import annotations

import json
from collections.abc import Iterable

from pwaforge.models.bundles import WebManifest

INITIAL_CACHE_NAME = "pwa-cache-v1"

SERVICE_WORKER_TEMPLATE = """const CACHE_NAME = '{cache_name}';
const ASSETS = [
{assets}
];

self.addEventListener('install', event => {{
  event.waitUntil(
    caches.open(CACHE_NAME).then(cache => cache.addAll(ASSETS))
  );
}});

self.addEventListener('activate', event => {{
  event.waitUntil(
    caches.keys().then(keys => Promise.all(
      keys.filter(k => k !== CACHE_NAME).map(k => caches.delete(k))
    ))
  );
}});

self.addEventListener('fetch', event => {{
  event.respondWith(
    caches.match(event.request)
      .then(response => {{
        return response || fetch(event.request).catch(() => caches.match('/index.html'));
      }})
  );
}});
"""

FALLBACK_INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{title}</title>
    <link rel="manifest" href="manifest.json">
    <link rel="stylesheet" href="styles.css">
</head>
<body>
    <div id="app">
        <h1>{title}</h1>
        <div id="content"></div>
    </div>
    <script src="app.js"></script>
    <script>
        if ('serviceWorker' in navigator) {{
            window.addEventListener('load', function() {{
                navigator.serviceWorker.register('sw.js')
                    .catch(function(err) {{ console.log('SW registration failed: ', err); }});
            }});
        }}
    </script>
</body>
</html>
"""

DEFAULT_STYLES_CSS = """body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    margin: 0;
    padding: 20px;
    background-color: #f5f5f5;
}

#app {
    max-width: 800px;
    margin: 0 auto;
    background: white;
    padding: 20px;
    border-radius: 8px;
    box-shadow: 0 2px 10px rgba(0,0,0,0.1);
}

#content {
    margin-top: 20px;
    line-height: 1.6;
}
"""

DEFAULT_APP_JS = """console.log('PWA App loaded');
document.addEventListener('DOMContentLoaded', function() {
    console.log('DOM fully loaded and parsed');
});
"""


def render_service_worker(assets: Iterable[str], cache_name: str = INITIAL_CACHE_NAME) -> str:
    """Cache-first service worker precaching *assets* (bundle-relative names)."""
    entries = ["/"] + [f"/{name}" for name in assets]
    listed = ",\n".join(f"  '{entry}'" for entry in entries)
    return SERVICE_WORKER_TEMPLATE.format(cache_name=cache_name, assets=listed)


def render_fallback_index(title: str) -> str:
    safe = title.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    return FALLBACK_INDEX_HTML.format(title=safe)


def render_default_manifest(name: str) -> str:
    manifest = WebManifest(name=name) if name else WebManifest()
    return json.dumps(manifest.model_dump(), indent=2)
