"""
Pipeline health monitoring for regwatch.

  monitoring/digest.py   — weekly health digest and score.
  monitoring/activity.py — gathers a week of outcomes from the stores.
  monitoring/reporter.py — JSON report files and ASCII terminal output.
"""
