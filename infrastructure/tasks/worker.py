"""Entry point for a local Celery worker with embedded beat.

Production deployments run ``celery -A infrastructure.tasks worker`` and a
separate ``celery beat``; this script is the single-process variant used in
development so expired idempotency keys still get cleaned up.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=[
            "worker",
            "--beat",
            "--hostname=reconciliation@%h",
            "--queues=default,maintenance",
            "--loglevel=INFO",
        ]
    )


if __name__ == "__main__":
    main()
