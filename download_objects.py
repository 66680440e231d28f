#!/usr/bin/env python3
"""
Download every object under an S3 key prefix to a local directory.

Each object lands at LocalPath/<key with the prefix stripped>; the key equal
to the prefix itself (a folder marker) is skipped. Every step is logged to the
console and appended to LogPath. A failed copy is logged and the remaining
objects are still downloaded; the exit status is non-zero if any copy failed.

Usage:
    python download_objects.py --AccessKey AKIA... --SecretKey ... \\
        --Region eu-west-1 --BucketName reports-bucket --KeyPrefix reports/ \\
        --LocalPath ./reports --LogPath ./logs/download.log
"""

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from batch import BatchResult, Deadline, DeadlineExceeded, client_config, run_batch
from cli_args import ConfigError
from run_log import close_logger, setup_logger


DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class DownloaderConfig:
    access_key: str = field(repr=False)
    secret_key: str = field(repr=False)
    region: str | None
    bucket_name: str
    key_prefix: str
    local_path: str
    log_path: str
    max_workers: int = DEFAULT_MAX_WORKERS
    deadline_seconds: float = None

    def __post_init__(self):
        for name in ("access_key", "secret_key", "bucket_name", "key_prefix", "local_path", "log_path"):
            if not getattr(self, name):
                raise ConfigError(f"{name} must not be empty")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ConfigError(f"deadline_seconds must be positive, got {self.deadline_seconds}")


@dataclass(frozen=True)
class ObjectEntry:
    key: str
    size: int = 0


def local_path_for(key: str, prefix: str, root: str | Path) -> Path | None:
    """Map an object key to its local path under root.

    Returns None when nothing is left once the prefix is stripped. Raises
    ValueError for keys outside the prefix or paths escaping root.
    """
    if not key.startswith(prefix):
        raise ValueError(f"key {key!r} is not under prefix {prefix!r}")

    relative = key[len(prefix):].lstrip("/")
    if not relative:
        return None

    base = Path(root).resolve()
    target = (base / relative).resolve()
    if not target.is_relative_to(base):
        raise ValueError(f"key {key!r} resolves outside {base}")
    return target


class S3ObjectStore:
    """List and fetch the objects of one bucket."""

    def __init__(self, session: boto3.Session, bucket: str, deadline: Deadline = None, max_workers: int = 1):
        self.bucket = bucket
        self.s3 = session.client("s3", config=client_config(deadline, max_workers))
        # one connection per object; max_workers is the whole concurrency budget
        self.transfer_config = TransferConfig(use_threads=False)

    def iter_objects(self, prefix: str) -> Iterator[ObjectEntry]:
        """Lazily page through every object whose key starts with prefix."""
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                yield ObjectEntry(item["Key"], item.get("Size", 0))

    def download(self, key: str, destination: Path):
        self.s3.download_file(self.bucket, key, str(destination), Config=self.transfer_config)


class BucketDownloader:
    def __init__(self, store: S3ObjectStore, config: DownloaderConfig, logger):
        self.store = store
        self.config = config
        self.logger = logger

    def _url(self, key: str) -> str:
        return f"s3://{self.config.bucket_name}/{key}"

    def _destination_text(self, key: str) -> str:
        try:
            destination = local_path_for(key, self.config.key_prefix, self.config.local_path)
        except ValueError:
            destination = None
        return str(destination if destination is not None else self.config.local_path)

    def copy(self, entry: ObjectEntry) -> Path | None:
        """Download one object, overwriting any local file. None means skipped."""
        destination = None
        try:
            destination = local_path_for(entry.key, self.config.key_prefix, self.config.local_path)
            if destination is None:
                self.logger.info(f"Skipping {self._url(entry.key)}: it is the prefix itself")
                return None
            if entry.key.endswith("/"):
                destination.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created folder {destination} for {self._url(entry.key)}")
                return None

            destination.parent.mkdir(parents=True, exist_ok=True)
            self.logger.info(f"Copying {self._url(entry.key)} ({entry.size} bytes) to {destination}")
            self.store.download(entry.key, destination)
            return destination
        except Exception as e:
            target = destination if destination is not None else self.config.local_path
            self.logger.error(f"Failed to copy {self._url(entry.key)} to {target}: {e}")
            raise

    def run(self, deadline: Deadline = None) -> BatchResult:
        """Download the prefix. Listing errors propagate to the caller."""
        config = self.config
        self.logger.info(f"Listing objects under {self._url(config.key_prefix)}")
        self.logger.info(f"Destination: {Path(config.local_path).resolve()}")
        if deadline is not None and deadline.seconds:
            self.logger.info(f"Deadline: {deadline.seconds:g}s")

        entries = self.store.iter_objects(config.key_prefix)
        result = run_batch(entries, self.copy, max_workers=config.max_workers, deadline=deadline)

        # copy() logs its own failures; these never reached it
        for failure in result.failures:
            if isinstance(failure.error, DeadlineExceeded):
                key = failure.item.key
                self.logger.error(f"Failed to copy {self._url(key)} to {self._destination_text(key)}: {failure.error}")
        if result.stopped_early:
            self.logger.error(f"Deadline reached: stopped listing {self._url(config.key_prefix)}; "
                              f"remaining objects were not downloaded")

        downloaded = [path for _, path in result.succeeded if path is not None]
        self.logger.info("=" * 60)
        self.logger.info("Summary:")
        self.logger.info(f"  Downloaded: {len(downloaded)}")
        self.logger.info(f"  Skipped: {len(result.succeeded) - len(downloaded)}")
        self.logger.info(f"  Errors: {len(result.failures)}")
        return result


def build_session(config: DownloaderConfig) -> boto3.Session:
    return boto3.Session(
        aws_access_key_id=config.access_key,
        aws_secret_access_key=config.secret_key,
        region_name=config.region or None,
    )


def parse_args(argv: list[str] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Download all objects under an S3 key prefix to a local directory"
    )
    parser.add_argument("--AccessKey", "--access-key", dest="access_key", required=True,
                        help="AWS access key ID")
    parser.add_argument("--SecretKey", "--secret-key", dest="secret_key", required=True,
                        help="AWS secret access key")
    parser.add_argument("--Region", "--region", dest="region",
                        help="AWS region (default: the session's configured region)")
    parser.add_argument("--BucketName", "--bucket-name", dest="bucket_name", required=True,
                        help="Bucket to read from")
    parser.add_argument("--KeyPrefix", "--key-prefix", dest="key_prefix", required=True,
                        help="Only objects whose key starts with this prefix are downloaded")
    parser.add_argument("--LocalPath", "--local-path", dest="local_path", required=True,
                        help="Local directory to write files into")
    parser.add_argument("--LogPath", "--log-path", dest="log_path", required=True,
                        help="Log file to append to (created if absent)")
    parser.add_argument("--max-workers", type=int, default=DEFAULT_MAX_WORKERS,
                        help="Concurrent downloads (default: %(default)s)")
    parser.add_argument("--deadline-seconds", type=float,
                        help="Stop starting new downloads after this many seconds")
    return parser.parse_args(argv)


def main(argv: list[str] = None) -> int:
    args = parse_args(argv)

    try:
        config = DownloaderConfig(
            access_key=args.access_key,
            secret_key=args.secret_key,
            region=args.region,
            bucket_name=args.bucket_name,
            key_prefix=args.key_prefix,
            local_path=args.local_path,
            log_path=args.log_path,
            max_workers=args.max_workers,
            deadline_seconds=args.deadline_seconds,
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        logger = setup_logger("download_objects", log_path=config.log_path)
    except OSError as e:
        print(f"Error: cannot open log file {config.log_path}: {e}", file=sys.stderr)
        return 1

    deadline = Deadline(config.deadline_seconds)
    try:
        store = S3ObjectStore(build_session(config), config.bucket_name, deadline, config.max_workers)
        result = BucketDownloader(store, config, logger).run(deadline)
    except NoCredentialsError:
        logger.error("Error: AWS credentials were rejected or not found")
        return 1
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Error listing s3://{config.bucket_name}/{config.key_prefix}: {e}")
        return 1
    finally:
        close_logger(logger)

    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
