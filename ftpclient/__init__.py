"""FTP transfer client.

RFC 959 client with the RFC 3659 MLSD/FEAT extensions: control channel,
passive and active data connections, binary and line mode transfers with
resume, and recursive directory tree transfers over a worker pool.
"""

__version__ = "0.1.0"
