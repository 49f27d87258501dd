"""KnownSift - separate known software from unknown files by hash."""
