import json
import os
import sys

import pytest


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


from npmf.http_utils import HttpResponse  # noqa: E402


@pytest.fixture()
def json_response():
    """构造一个 JSON 响应（默认 200），用于喂给 FakeHttp。"""

    def _make(url: str, payload, status: int = 200) -> HttpResponse:  # noqa: ANN001
        return HttpResponse(status=status, url=url, headers={}, body=json.dumps(payload).encode("utf-8"))

    return _make
