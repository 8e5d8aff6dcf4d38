# nexvoy/core/__init__.py
