"""Concurrent, retrying teardown of independent resources."""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from botocore.exceptions import ClientError

from .cancel import CancelToken
from .retry import RETRY_ATTEMPTS, RETRY_DELAY, retry_call
from .utils import debug, log, logger


@dataclass(frozen=True)
class TeardownTask:
    name: str
    fn: Callable[[], None]


def run_teardown(
    tasks: list[TeardownTask],
    cancel: CancelToken,
    *,
    attempts: int = RETRY_ATTEMPTS,
    delay: float = RETRY_DELAY,
) -> list[Exception]:
    """Run every task concurrently, each under the retry policy.

    All tasks run to completion regardless of the others. Each task owns a
    disjoint resource, so the workers share no state.

    :param tasks: Independent deletion tasks
    :param cancel: Cancellation token shared by all workers
    :return: One exception per failed task, annotated with the task name
    """
    if not tasks:
        return []

    def _run(task: TeardownTask) -> Exception | None:
        debug(f"Teardown task '{task.name}' started")
        try:
            retry_call(task.fn, cancel, attempts=attempts, delay=delay)
        except Exception as e:
            e.add_note(f"teardown task: {task.name}")
            logger.error(f"Teardown task '{task.name}' failed: {e}")
            return e
        log(f"Teardown task '{task.name}' done")
        return None

    with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="teardown") as pool:
        outcomes = list(pool.map(_run, tasks))
    return [e for e in outcomes if e is not None]


def delete_bucket(s3, bucket: str) -> None:
    """Empty and delete a versioned bucket.

    Deletes current objects, then every object version and delete marker,
    then the bucket itself. A bucket that does not exist counts as deleted.

    :param s3: boto3 S3 client
    :param bucket: Bucket name
    """
    debug(f"Emptying bucket '{bucket}'")
    try:
        for page in s3.get_paginator("list_objects_v2").paginate(Bucket=bucket):
            for obj in page.get("Contents", []):
                s3.delete_object(Bucket=bucket, Key=obj["Key"])
    except ClientError as e:
        if e.response["Error"]["Code"] == "NoSuchBucket":
            log(f"Bucket '{bucket}' does not exist")
            return
        raise

    debug(f"Deleting object versions in '{bucket}'")
    for page in s3.get_paginator("list_object_versions").paginate(Bucket=bucket):
        for obj in page.get("Versions", []) + page.get("DeleteMarkers", []):
            s3.delete_object(Bucket=bucket, Key=obj["Key"], VersionId=obj["VersionId"])

    s3.delete_bucket(Bucket=bucket)
    log(f"Bucket '{bucket}' deleted")
