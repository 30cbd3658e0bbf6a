"""MFS Quote Engine - quote lifecycle, DIP reconciliation and rate data health."""
