"""Provisioning and load generation for Zabbix performance tests."""

# Semantic Versioning
VERSION = '0.1.0'
