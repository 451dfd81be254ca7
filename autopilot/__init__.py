"""
Marketing Autopilot

An autonomous optimization control loop for marketing accounts. On a schedule
(or on demand) it inspects account state, detects anomalies, proposes budget,
creative and audience changes, and either surfaces them for approval or applies
them directly, subject to a safety-rule engine and an emergency kill switch.
"""

__version__ = "0.1.0"
