"""
fleetup
Resource ledger and provisioning orchestrator for node fleets on AWS
"""
