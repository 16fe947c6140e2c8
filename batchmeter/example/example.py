"""
Simple example running a metered image batch in memory.
Shows reservation, live progress, settlement and a single paced provider call.

Usage:
    python -m batchmeter.example.example
"""

import random
import time

from batchmeter import (
    BatchMeter,
    BatchMeterSettings,
    BatchUpdate,
    InMemoryLedger,
    QueueUpdate,
    RateLimitOptions,
    ReservationDenied,
)
from batchmeter.model.batch_item import BatchItem
from batchmeter.model.batch_job import BatchJob


def generate_image(item: BatchItem, job: BatchJob) -> dict:
    """Stand-in for an image provider call that sometimes fails."""
    time.sleep(random.uniform(0.1, 0.4))
    if random.random() < 0.2:
        raise RuntimeError(f"provider rejected {item.payload_key}")
    return {"image_url": f"https://cdn.example/{job.id}/{item.payload_key}.png"}


def print_progress(update: BatchUpdate) -> None:
    if update.item_id is None:
        print(f"job {update.job_status}: {update.done}/{update.total} done")
    else:
        print(f"  item {update.item_status} ({update.succeeded} ok, {update.failed} failed)")


def print_queue(update: QueueUpdate) -> None:
    print(f"provider task {update.id}: {update.status.value} {update.message}".rstrip())


def main() -> None:
    ledger = InMemoryLedger(balance=60, user_id="demo-user")
    meter = BatchMeter(
        ledger,
        settings=BatchMeterSettings(settlement_poll_interval=0.5),
        rate_limit_options=RateLimitOptions(min_gap=1.0, base_delay=2.0),
    )
    meter.on_batch_update(print_progress)
    meter.on_provider_update(print_queue)

    shots = [f"S1.{n}" for n in range(1, 9)]
    try:
        handle = meter.start_batch(shots, generate_image, cost_per_item=6, user_id="demo-user")
    except ReservationDenied as e:
        print(e.to_dict())
        return

    print(f"reserved {handle.total_cost} credits, balance now {ledger.balance}")
    result = handle.wait(timeout=60.0)
    if result is not None:
        print(f"settlement: {result.to_dict()}")
    print(f"balance after settlement: {ledger.balance}")

    upscale = meter.submit_provider_call("upscale-S1.1", lambda: "https://cdn.example/upscaled.png")
    print(f"upscaled: {upscale.result(timeout=30.0)}")
    meter.close(timeout=10.0)


if __name__ == "__main__":
    main()
