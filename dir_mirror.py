# /dir_mirror.py
"""
Dir Mirror (polling, no UI)
- Polls a source folder on a fixed interval and mirrors changes into a replica folder.
- One-way only: the source is authoritative, the replica is only written by this tool.
- Change detection by modification time (lstat mtime_ns), no hashing:
  - new path            -> create
  - newer mtime         -> modify
  - path gone from disk -> delete
- Two passes per tick: creates/modifies are detected and replicated first,
  deletions are collected afterwards and dropped from the snapshot once the pass is done.
- Snapshot lives in memory only. A cold start replays every source entry as a create.
- Symlinks and special files are never followed or copied, only reported as warnings.
- Optional gitignore-style ignore rules (--ignore, repeatable).
- Styled console output:
  - created green, modified light brown, deleted orange
  - warnings yellow, errors red, debug blue
  - file paths white, folder paths light brown
- Log file is always plain (no color codes) and carries the code location of each record.

Usage
  pip install pathspec colorama
  python dir_mirror.py SOURCE REPLICA INTERVAL LOGFILE
  python dir_mirror.py "/src" "/dst" 10 ./mirror.log --ignore "*.tmp" --ignore "build/"
"""

from __future__ import annotations

import argparse
import enum
import logging
import os
import shutil
import signal
import stat
import sys
import threading
from dataclasses import dataclass, replace
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, Optional

from colorama import Fore, Style, just_fix_windows_console
from pathspec import PathSpec

LOGGER_NAME = "dir_mirror"

REPLICA_LABEL = "Replica"


# -------------------------
# Errors
# -------------------------

class ConfigError(ValueError):
    """Invalid or missing startup configuration."""


class MirrorInvariantError(RuntimeError):
    """An action or entry kind outside the known set reached dispatch."""


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = Style.RESET_ALL
    RED = Fore.RED
    GREEN = Fore.GREEN
    YELLOW = Fore.YELLOW
    BLUE = Fore.BLUE
    ORANGE = "\x1b[38;5;208m"
    WHITE = Fore.LIGHTWHITE_EX
    LIGHT_BROWN = Fore.YELLOW + Style.DIM


SEVERITY_COLORS = {
    logging.DEBUG: Ansi.BLUE,
    logging.WARNING: Ansi.YELLOW,
    logging.ERROR: Ansi.RED,
    logging.CRITICAL: Ansi.RED,
}

ACTION_COLORS = {
    "created": Ansi.GREEN,
    "modified": Ansi.LIGHT_BROWN,
    "deleted": Ansi.ORANGE,
}


def _supports_color(stream) -> bool:
    isatty = getattr(stream, "isatty", None)
    if isatty is None:
        return False
    try:
        return bool(isatty())
    except ValueError:
        # closed stream
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        severity_color = SEVERITY_COLORS.get(record.levelno)
        if severity_color:
            return f"{severity_color}{base}{Ansi.RESET}"

        action = getattr(record, "action", None)
        is_dir = getattr(record, "is_dir", None)
        path_text = getattr(record, "path_text", None)

        if action:
            action_color = ACTION_COLORS.get(action, "")
            if action_color and action in base:
                base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if is_dir else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


LOG_DATEFMT = "%Y/%m/%d %H:%M:%S"
LOG_FMT = "%(asctime)s | %(levelname)s: %(message)s"
LOG_FMT_WITH_SOURCE = LOG_FMT + " (FROM: %(filename)s:%(lineno)d)"


def setup_logger(log_file: Path, debug: bool = False, show_source: bool = False) -> logging.Logger:
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # FATAL is the name the log file uses for the highest severity
    logging.addLevelName(logging.CRITICAL, "FATAL")

    logger = logging.getLogger(LOGGER_NAME)
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)
    logger.propagate = False

    if logger.handlers:
        return logger

    just_fix_windows_console()

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=LOG_FMT_WITH_SOURCE, datefmt=LOG_DATEFMT))
    fh.setLevel(level)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    console_fmt = LOG_FMT_WITH_SOURCE if show_source else LOG_FMT
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=console_fmt, datefmt=LOG_DATEFMT))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("Logging to: %s", log_file)
    return logger


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    is_dir: Optional[bool] = None,
    level: int = logging.INFO,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = bool(is_dir) if is_dir is not None else (path.is_dir() and not path.is_symlink())
    # stacklevel=2: the code location is the caller, not this helper
    logger.log(level, message, extra=extra, stacklevel=2)


# -------------------------
# Model
# -------------------------

class EntryKind(enum.Enum):
    DIRECTORY = "Directory"
    REGULAR_FILE = "Regular file"
    UNEXPECTED = "Unexpected file"


class Action(enum.Enum):
    CREATE = "created"
    MODIFY = "modified"
    DELETE = "deleted"


def kind_of(mode: int) -> EntryKind:
    if stat.S_ISDIR(mode):
        return EntryKind.DIRECTORY
    if stat.S_ISREG(mode):
        return EntryKind.REGULAR_FILE
    return EntryKind.UNEXPECTED


@dataclass(frozen=True)
class Entry:
    """One object under the source tree, keyed by its tree-relative posix path."""

    path: str
    kind: EntryKind
    modified_at: int


@dataclass(frozen=True)
class ChangeEvent:
    action: Action
    kind: EntryKind
    path: str
    source_path: Path

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name


class SnapshotStore:
    """
    What the source looked like at the end of the last tick, plus the paths
    believed to exist in the replica. Only the scheduler thread touches it.
    """

    def __init__(self) -> None:
        self.source: dict[str, Entry] = {}
        self.replica: set[str] = set()

    def __len__(self) -> int:
        return len(self.source)

    def __contains__(self, path: str) -> bool:
        return path in self.source

    def get(self, path: str) -> Optional[Entry]:
        return self.source.get(path)

    def record(self, entry: Entry) -> None:
        self.source[entry.path] = entry
        self.replica.add(entry.path)

    def refresh(self, entry: Entry) -> None:
        self.source[entry.path] = entry

    def entries(self) -> list[Entry]:
        return [self.source[path] for path in sorted(self.source)]

    def discard(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.source.pop(path, None)
            self.replica.discard(path)


# -------------------------
# Ignore rules
# -------------------------

class IgnoreMatcher:
    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns = tuple(patterns)
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        if not self.patterns:
            return False
        if is_dir and not rel_path.endswith("/"):
            rel_path += "/"
        return self.spec.match_file(rel_path)


# -------------------------
# Diff engine
# -------------------------

def _reraise(error: OSError) -> None:
    raise error


class DiffEngine:
    """
    Walks the source tree and yields the change events that bring the
    snapshot in line with the disk.

    scan() is a generator: each create/modify is recorded in the snapshot only
    once the consumer asks for the next event, so an event whose replication
    raised is detected again on the next tick. All forward-pass events are
    yielded before the reconciliation deletes; the one delete the forward pass
    emits is for a tracked file or directory that turned into a symlink (or
    another unexpected kind) at the same path.
    """

    def __init__(self, source_root: Path, ignore: IgnoreMatcher, logger: logging.Logger):
        self.source_root = source_root
        self.ignore = ignore
        self.logger = logger

    def walk(self) -> Iterator[Entry]:
        # onerror re-raises: a failed listing aborts the tick instead of being skipped
        for dirpath, dirnames, filenames in os.walk(self.source_root, onerror=_reraise):
            current = Path(dirpath)
            descend = []
            for name in sorted(dirnames + filenames):
                full = current / name
                st = os.lstat(full)
                kind = kind_of(st.st_mode)
                rel = full.relative_to(self.source_root).as_posix()
                if self.ignore.is_ignored(rel, is_dir=kind is EntryKind.DIRECTORY):
                    continue
                if kind is EntryKind.DIRECTORY:
                    descend.append(name)
                yield Entry(path=rel, kind=kind, modified_at=st.st_mtime_ns)
            dirnames[:] = descend

    def scan(self, store: SnapshotStore) -> Iterator[ChangeEvent]:
        for entry in self.walk():
            known = store.get(entry.path)
            if known is None:
                yield self._event(Action.CREATE, entry)
                store.record(entry)
            elif entry.modified_at > known.modified_at or entry.kind is not known.kind:
                if entry.kind is EntryKind.UNEXPECTED and known.kind is not EntryKind.UNEXPECTED:
                    # nothing gets copied for the new kind, so the mirrored object must go
                    yield self._event(Action.DELETE, known)
                yield self._event(Action.MODIFY, entry)
                store.refresh(entry)

        garbage: list[str] = []
        for entry in store.entries():
            if entry.path not in store.replica:
                continue
            if self._still_present(entry.path):
                continue
            yield self._event(Action.DELETE, entry)
            garbage.append(entry.path)

        store.discard(garbage)
        if garbage:
            self.logger.debug("Dropped %d deleted entries from snapshot", len(garbage))

    def _still_present(self, rel: str) -> bool:
        # every ancestor must still be a real directory; a parent swapped for
        # a symlink would otherwise make children reachable through it
        current = self.source_root
        parts = PurePosixPath(rel).parts
        for part in parts[:-1]:
            current = current / part
            if os.path.islink(current) or not os.path.isdir(current):
                return False
        return os.path.lexists(current / parts[-1])

    def _event(self, action: Action, entry: Entry) -> ChangeEvent:
        return ChangeEvent(
            action=action,
            kind=entry.kind,
            path=entry.path,
            source_path=self.source_root / entry.path,
        )


# -------------------------
# Replication
# -------------------------

def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def describe(event: ChangeEvent) -> str:
    if event.kind is EntryKind.UNEXPECTED:
        return f"Unexpected file {event.name} has been {event.action.value} | {event.source_path}"
    where = f"from {REPLICA_LABEL}" if event.action is Action.DELETE else f"in {REPLICA_LABEL}"
    return f"{event.kind.value} {event.name} has been {event.action.value} {where} | {event.source_path}"


def _check_event(event: ChangeEvent) -> None:
    if not isinstance(event.action, Action):
        raise MirrorInvariantError(f"Unexpected action has been detected for {event.path}: {event.action!r}")
    if not isinstance(event.kind, EntryKind):
        raise MirrorInvariantError(f"Action has been detected for unexpected file type at {event.path}: {event.kind!r}")


class Replicator:
    """Applies change events to the replica tree, one log record per event."""

    def __init__(self, source_root: Path, replica_root: Path, ignore: IgnoreMatcher, logger: logging.Logger):
        self.source_root = source_root
        self.replica_root = replica_root
        self.ignore = ignore
        self.logger = logger

    def destination(self, event: ChangeEvent) -> Path:
        return self.replica_root / event.path

    def apply(self, event: ChangeEvent) -> None:
        _check_event(event)

        if event.kind is EntryKind.UNEXPECTED:
            log_action(self.logger, event.action.value, describe(event), path=event.source_path, is_dir=False, level=logging.WARNING)
            return

        is_dir = event.kind is EntryKind.DIRECTORY
        log_action(self.logger, event.action.value, describe(event), path=event.source_path, is_dir=is_dir)

        dst = self.destination(event)
        if event.action in (Action.CREATE, Action.MODIFY):
            if is_dir:
                self._copy_tree(event.source_path, dst)
            else:
                self._copy_file(event.source_path, dst)
        else:
            self._remove(dst)

    def _copy_file(self, src: Path, dst: Path) -> None:
        ensure_parent(dst)
        if dst.is_symlink():
            dst.unlink()
        elif dst.is_dir():
            shutil.rmtree(dst)
        shutil.copy2(src, dst)

    def _copy_tree(self, src: Path, dst: Path) -> None:
        ensure_parent(dst)
        if dst.is_symlink() or (dst.exists() and not dst.is_dir()):
            dst.unlink()
        shutil.copytree(src, dst, ignore=self._skip_names, copy_function=shutil.copy2, dirs_exist_ok=True)

    def _skip_names(self, dirpath: str, names: list[str]) -> set[str]:
        skipped = set()
        current = Path(dirpath)
        for name in names:
            full = current / name
            kind = kind_of(os.lstat(full).st_mode)
            if kind is EntryKind.UNEXPECTED:
                skipped.add(name)
                continue
            rel = full.relative_to(self.source_root).as_posix()
            if self.ignore.is_ignored(rel, is_dir=kind is EntryKind.DIRECTORY):
                skipped.add(name)
        return skipped

    # Removing something already gone is a no-op: a deleted directory's
    # children get their own delete events after the directory itself.
    def _remove(self, dst: Path) -> None:
        if not os.path.lexists(dst):
            return
        if dst.is_dir() and not dst.is_symlink():
            shutil.rmtree(dst)
        else:
            dst.unlink()


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class MirrorConfig:
    source_root: Path
    replica_root: Path
    poll_interval_sec: int
    log_file: Path
    ignore_patterns: tuple[str, ...] = ()
    fail_fast: bool = False
    debug: bool = False
    show_source: bool = False


def positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid interval: {raw!r} is not an integer") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"invalid interval: {value} (must be a positive number of seconds)")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="dir-mirror",
        description="Periodically mirror a source folder into a replica folder (one way).",
    )
    p.add_argument("source", type=str, help="Folder to mirror (source).")
    p.add_argument("replica", type=str, help="Folder kept in sync with the source (replica).")
    p.add_argument("interval", type=positive_int, help="Seconds between poll passes (positive integer).")
    p.add_argument("log_file", type=str, help="Log file path.")
    p.add_argument("--ignore", action="append", default=[], metavar="PATTERN", help="Gitignore-style pattern to skip (repeatable).")
    p.add_argument("--fail-fast", action="store_true", help="Stop on the first failed poll pass instead of retrying next interval.")
    p.add_argument("--debug", action="store_true", help="Emit DEBUG records.")
    p.add_argument("--show-source", action="store_true", help="Show the code location on console lines too.")
    p.add_argument("--once", action="store_true", help="Run a single poll pass and exit.")
    return p


def parse_args(argv: list[str]) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def config_failure(parser: argparse.ArgumentParser, message: str) -> int:
    # same shape as argparse's own errors, without raising SystemExit
    parser.print_usage(sys.stderr)
    print(f"{parser.prog}: error: {message}", file=sys.stderr)
    return 2


def build_config(args: argparse.Namespace) -> MirrorConfig:
    return MirrorConfig(
        source_root=Path(args.source),
        replica_root=Path(args.replica),
        poll_interval_sec=args.interval,
        log_file=Path(args.log_file),
        ignore_patterns=tuple(args.ignore),
        fail_fast=args.fail_fast,
        debug=args.debug,
        show_source=args.show_source,
    )


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def validate_config(cfg: MirrorConfig) -> MirrorConfig:
    source = cfg.source_root.expanduser().resolve()
    replica = cfg.replica_root.expanduser().resolve()

    if not source.is_dir():
        raise ConfigError(f"Source folder does not exist or is not a folder: {source}")
    if not os.access(source, os.R_OK | os.X_OK):
        raise ConfigError(f"Source folder is not readable: {source}")
    if source == replica:
        raise ConfigError("Source and replica folders must be different.")
    if _is_subpath(replica, source):
        raise ConfigError("Replica folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, replica):
        raise ConfigError("Source folder must NOT be inside replica folder (would cause confusion).")
    if cfg.poll_interval_sec <= 0:
        raise ConfigError(f"Poll interval must be a positive number of seconds, got {cfg.poll_interval_sec}")

    try:
        replica.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Replica folder cannot be created: {replica} | {e}") from e
    if not os.access(replica, os.W_OK | os.X_OK):
        raise ConfigError(f"Replica folder is not writable: {replica}")

    return replace(cfg, source_root=source, replica_root=replica)


# -------------------------
# Poll scheduler thread
# -------------------------

class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class MirrorScheduler(threading.Thread):
    """
    Background poll loop: wait one interval, run one tick, repeat.

    Cancellation is cooperative: shutdown() sets the stop event, which cuts
    the current wait short but never interrupts a tick in progress, so the
    loop stops at most one interval plus one tick after the request.
    """

    def __init__(
        self,
        config: MirrorConfig,
        logger: logging.Logger,
        stop_event: Optional[threading.Event] = None,
    ):
        super().__init__(name="dir-mirror-poll", daemon=True)
        self.config = config
        self.logger = logger
        self.stop_event = stop_event or threading.Event()
        self.interval_sec = config.poll_interval_sec
        self.ignore = IgnoreMatcher(config.ignore_patterns)
        self.store = SnapshotStore()
        self.engine = DiffEngine(config.source_root, self.ignore, logger)
        self.replicator = Replicator(config.source_root, config.replica_root, self.ignore, logger)
        self.error: Optional[BaseException] = None
        self._lifecycle = SchedulerState.IDLE
        self._lifecycle_guard = threading.Lock()

    @property
    def state(self) -> SchedulerState:
        with self._lifecycle_guard:
            return self._lifecycle

    def start(self) -> None:
        with self._lifecycle_guard:
            if self._lifecycle is not SchedulerState.IDLE:
                raise RuntimeError(f"Scheduler cannot be started from state {self._lifecycle.value}")
            self._lifecycle = SchedulerState.RUNNING
        super().start()

    def run(self) -> None:
        self.logger.info("POLL: started (interval=%ds)", self.interval_sec)
        try:
            while not self.stop_event.is_set():
                self.stop_event.wait(self.interval_sec)
                if self.stop_event.is_set():
                    break
                try:
                    self.tick()
                except OSError as e:
                    if self.config.fail_fast:
                        self.logger.critical("POLL: pass failed, stopping: %s", e, exc_info=True)
                        self.error = e
                        break
                    self.logger.error("POLL: pass failed, retrying next interval: %s", e, exc_info=True)
        except Exception as e:
            self.logger.critical("POLL: stopping on unrecoverable error: %s", e, exc_info=True)
            self.error = e
        finally:
            with self._lifecycle_guard:
                self._lifecycle = SchedulerState.STOPPED
            self.logger.info("POLL: stopped")

    def tick(self) -> int:
        count = 0
        for event in self.engine.scan(self.store):
            self.replicator.apply(event)
            count += 1
        self.logger.debug("POLL: pass done, %d change(s), %d entries tracked", count, len(self.store))
        return count

    def shutdown(self, timeout: Optional[float] = None) -> None:
        with self._lifecycle_guard:
            if self._lifecycle is SchedulerState.IDLE:
                self._lifecycle = SchedulerState.STOPPED
                return
            if self._lifecycle is SchedulerState.RUNNING:
                self._lifecycle = SchedulerState.STOPPING
                self.stop_event.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)


# -------------------------
# Main
# -------------------------

def _interrupt(signum, frame) -> None:
    raise KeyboardInterrupt


def run_once(scheduler: MirrorScheduler, logger: logging.Logger) -> int:
    try:
        count = scheduler.tick()
    except (OSError, MirrorInvariantError) as e:
        logger.critical("Single pass failed: %s", e, exc_info=True)
        return 1
    logger.info("Single pass done: %d change(s)", count)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    cfg = build_config(args)

    try:
        logger = setup_logger(cfg.log_file, debug=cfg.debug, show_source=cfg.show_source)
    except OSError as e:
        return config_failure(parser, f"cannot open log file {cfg.log_file}: {e}")
    try:
        try:
            cfg = validate_config(cfg)
        except ConfigError as e:
            logger.error("Config error: %s", e)
            return config_failure(parser, str(e))

        logger.info("Source : %s", cfg.source_root)
        logger.info("Replica: %s", cfg.replica_root)
        if cfg.ignore_patterns:
            logger.info("Ignore : %s", ", ".join(cfg.ignore_patterns))

        scheduler = MirrorScheduler(cfg, logger)
        if args.once:
            return run_once(scheduler, logger)

        previous_term = signal.signal(signal.SIGTERM, _interrupt)

        logger.info("Starting poller... (Ctrl+C to stop)")
        scheduler.start()
        try:
            while scheduler.is_alive():
                scheduler.join(0.5)
        except KeyboardInterrupt:
            logger.info("Stopping...")
        finally:
            # a repeated Ctrl+C / SIGTERM must not break out of the shutdown join
            previous_int = signal.signal(signal.SIGINT, signal.SIG_IGN)
            signal.signal(signal.SIGTERM, signal.SIG_IGN)
            try:
                scheduler.shutdown()
            finally:
                signal.signal(signal.SIGINT, previous_int)
                signal.signal(signal.SIGTERM, previous_term)
        return 1 if scheduler.error else 0
    finally:
        close_logger(logger)


if __name__ == "__main__":
    raise SystemExit(main())
