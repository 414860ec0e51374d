"""
Wan Video Generator Services

- video_generation: provider client, stores, artifact transfer, lifecycle coordinator
- api: FastAPI HTTP surface
"""
