"""
FastAPI Application Package

This package contains the FastAPI application exposing quotes, charts,
ticker search and conversion over HTTP.
"""
