import os

import pytest


INDEX = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Demo</title>
    {head}
  </head>
  <body>
    <!-- app root -->
    <div id="app"></div>
    {body}
  </body>
</html>
"""


def write_index(directory, head="", body=""):
    path = os.path.join(str(directory), "index.html")
    with open(path, "w", encoding="utf-8") as f:
        f.write(INDEX.format(head=head, body=body))
    return path


def read(path):
    with open(str(path), "r", encoding="utf-8") as f:
        return f.read()


@pytest.fixture
def site(tmp_path):
    """An empty build output directory named dist."""
    dist = tmp_path / "dist"
    dist.mkdir()
    return dist
