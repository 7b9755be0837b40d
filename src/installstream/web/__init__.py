"""Log relay: the producer side of the installation stream."""
