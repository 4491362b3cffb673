from __future__ import annotations

from prometheus_client import Counter

storage_proxy_hits_total = Counter(
    "storage_proxy_hits_total",
    "Storage proxy requests served, by the location shape that resolved.",
    ["probe"],
)
storage_proxy_misses_total = Counter(
    "storage_proxy_misses_total",
    "Storage proxy requests that resolved nowhere and returned 404.",
)
storage_proxy_redirects_total = Counter(
    "storage_proxy_redirects_total",
    "Storage proxy requests redirected to their canonical URL.",
)
media_migration_files_total = Counter(
    "media_migration_files_total",
    "Files handled by the bulk media migration, by outcome.",
    ["outcome"],
)
