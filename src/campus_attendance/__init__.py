"""Campus attendance package.

Organized by feature modules (sessions, checkin, statistics, ...) with a thin
Flask controller layer over service/repository layers.
"""
