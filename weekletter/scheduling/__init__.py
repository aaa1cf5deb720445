"""Scheduling - cron jobs and the polling scheduler"""
