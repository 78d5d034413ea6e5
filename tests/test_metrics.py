from payment_queue.models import ExecutionResult


def sample(metrics, name, **labels):
    return metrics.registry.get_sample_value(name, labels or None)


async def test_worker_records_outcomes_retries_and_dead_letters(queue, metrics, make_worker):
    async def always_retry(payload):
        return ExecutionResult.retry("rpc timeout")

    queue.enqueue({}, max_attempts=2)
    worker = make_worker(always_retry)
    await worker.run_once()
    await worker.run_once()

    assert sample(metrics, "jobs_enqueued_total") == 1
    assert sample(metrics, "job_retries_total") == 1
    assert sample(metrics, "jobs_completed_total", outcome="retrying") == 1
    assert sample(metrics, "jobs_completed_total", outcome="dead_lettered") == 1
    assert sample(metrics, "jobs_dead_lettered_total", reason="exhausted") == 1
    assert sample(metrics, "worker_jobs_processed_total", worker_id="worker-test") == 2


def test_queue_gauges(metrics):
    metrics.update_queue_sizes(pending=4, dead_letter=1, delayed=2)
    metrics.update_active_workers(3)

    assert sample(metrics, "queue_size") == 4
    assert sample(metrics, "dead_letter_queue_size") == 1
    assert sample(metrics, "delayed_retry_size") == 2
    assert sample(metrics, "active_workers") == 3
    assert b"jobs_enqueued_total" in metrics.get_metrics()
