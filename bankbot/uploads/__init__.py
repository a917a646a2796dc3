"""Upload handling: transient staging, the lifecycle flows built on it
(scan-and-admit, extract-and-release), the upload size cap and the HTTP routes.
"""
