"""
Core relay engine.

`DownloadManager` drives each request through admission, catalog lookup,
media download and relay. `AdmissionController` gates requests and
`RelayPipeline` delivers downloaded stories.
"""
