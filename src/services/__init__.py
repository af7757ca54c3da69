"""
Services package initializer.

Subpackages:
- vision: face recognition vendor gateway (AWS Rekognition)
- face: clustering engine, quality scoring and crop enhancement
- storage: S3 object storage
- pipeline: job orchestration and the detection / grouping / cleanup stages
"""
