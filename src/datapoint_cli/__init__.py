#!/usr/bin/env python3
"""A CLI for the datapoint_rf library."""
