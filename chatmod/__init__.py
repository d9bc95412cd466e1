"""
Chat moderation and analytics pipeline.

Packages:
- models: pydantic records stored in the record store
- lib: record store, configuration, errors, metrics, Kafka alerts
- services: classifier, flag store, user manager, analytics and reports
- api: FastAPI admin endpoints

Usage:
    from chatmod.run_pipeline import Pipeline

    pipeline = Pipeline()
    await pipeline.start()
    result = await pipeline.moderation_service.submit_message("u1", "Ann", "hello")
"""

__version__ = "0.1.0"
