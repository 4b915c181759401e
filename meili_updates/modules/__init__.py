"""
Update modules. Each module exposes a main(args) entrypoint returning a
result dict with a "success" key.
"""
