"""Traefik Relay.

Mirrors the routers of several Traefik instances into one Redis key space
that a relay Traefik reads through its Redis provider:
 - pulls routers, middlewares and services from each instance's API
 - remaps them into ``traefik/...`` keys, filtered by entrypoint mapping
 - removes keys published by the previous cycle that no longer apply
 - exposes a small status API for the instances it watches
"""
