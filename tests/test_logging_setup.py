import logging

from taskgraph_platform.logging_setup import setup_logging


def test_setup_logging_replaces_handlers(tmp_path):
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        setup_logging("info")
        setup_logging("debug")
        console = [h for h in root.handlers if type(h) is logging.StreamHandler]
        assert len(console) == 1
        assert console[0].level == logging.DEBUG

        log_file = tmp_path / "logs" / "taskgraph.log"
        setup_logging(logging.WARNING, log_file=log_file)
        assert root.level == logging.DEBUG
        logging.getLogger("taskgraph_platform.test").debug("written to file only")
        for h in root.handlers:
            h.flush()
        assert "written to file only" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            if isinstance(h, logging.FileHandler):
                h.close()
        root.setLevel(saved[0])
        for h in saved[1]:
            root.addHandler(h)
