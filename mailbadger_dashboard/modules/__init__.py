"""
Mailbadger Dashboard Modules
============================

Feature blueprints registered by MailbadgerDashboard.init_app.
"""
