"""Job-scoped workspace with guaranteed cleanup."""
import os
import shutil
from collections import namedtuple
from contextlib import contextmanager

from flask import current_app


Workspace = namedtuple("Workspace", ["root", "segments_dir"])


def remove_path(path):
    """Delete a file or directory tree. Missing paths are fine."""
    if not path:
        return
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        current_app.logger.warning("Could not remove %s", path, exc_info=True)


@contextmanager
def job_workspace(work_root, job_id, source_path=None):
    """Create ``<work_root>/<job_id>`` and always remove it on exit.

    The uploaded source file goes too, whichever way the block is left
    (normal return, exception, generator close).
    """
    root = os.path.join(work_root, str(job_id))
    segments_dir = os.path.join(root, "segments")
    try:
        os.makedirs(segments_dir, exist_ok=True)
        yield Workspace(root, segments_dir)
    finally:
        remove_path(root)
        remove_path(source_path)
        current_app.logger.debug("Workspace %s released", root)
