import os
import sys
import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _clear_provider_env():
    """Keep provider tokens and daemon settings from leaking into tests.

    A developer shell may export these; clear them before each test and
    restore afterwards so tests that set them stay deterministic.
    """
    keys = [
        'SPOTIFY_ACCESS_TOKEN', 'SPOTIFY_REFRESH_TOKEN', 'YANDEX_ACCESS_TOKEN', 'YANDEX_TOKEN',
        'SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'SPOTIFY_REDIRECT_URI',
        'CLOUDMPD_ADDRESS', 'CLOUDMPD_PROVIDER', 'CLOUDMPD_CACHE_DIR', 'CLOUDMPD_CACHE_SIZE',
        'CLOUDMPD_SEARCH_LIMIT', 'CLOUDMPD_DEVICE_ID', 'CLOUDMPD_HTTP_PORT', 'CLOUDMPD_MPV_PATH',
    ]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
