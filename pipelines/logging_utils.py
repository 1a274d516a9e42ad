"""
Logging utility functions for structured logging
"""
import logging
import time
from contextlib import contextmanager

pipeline_logger = logging.getLogger('pipelines')
monitoring_logger = logging.getLogger('pipelines.monitoring')


def log_with_context(logger, level, message, **context):
    """
    Log a message with additional context fields

    Args:
        logger: The logger instance to use
        level: Log level name (INFO, ERROR, WARNING, etc.)
        message: The log message
        **context: Additional context fields (pipeline_id, connector_name, etc.)

    Example:
        log_with_context(
            pipeline_logger,
            'INFO',
            'Source connector deployed',
            pipeline_id=12,
            connector_name='orders-source',
        )
    """
    extra = {k: v for k, v in context.items() if v is not None}
    logger.log(getattr(logging, level.upper()), message, extra=extra)


@contextmanager
def log_operation(logger, operation_name, **context):
    """
    Context manager to log the start, end, and duration of an operation

    Example:
        with log_operation(pipeline_logger, 'pipeline_deploy', pipeline_id=12):
            deployer.deploy()
    """
    start_time = time.monotonic()

    log_with_context(logger, 'INFO', f'{operation_name} started', operation=operation_name, **context)

    try:
        yield
    except Exception as e:
        log_with_context(
            logger,
            'ERROR',
            f'{operation_name} failed: {str(e)}',
            operation=operation_name,
            duration=time.monotonic() - start_time,
            status='failed',
            error_type=type(e).__name__,
            **context
        )
        raise

    log_with_context(
        logger,
        'INFO',
        f'{operation_name} completed',
        operation=operation_name,
        duration=time.monotonic() - start_time,
        status='success',
        **context
    )
