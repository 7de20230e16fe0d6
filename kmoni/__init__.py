"""
kmoni: Station color cache over the Kyoshin Monitor real-time maps

- Resolves the map identifier for "now" in the publisher's clock (timestamps.py)
- Fetches it with an older-second fallback (fetcher.py), decodes it (decoder.py)
- Samples fixed station pixels (sampler.py) and publishes snapshots (store.py)
- Drives one non-overlapping refresh loop per raster class (scheduler.py)
- Serves /stations/{class}, /image/{class}, /status, /health (server.py)
"""
