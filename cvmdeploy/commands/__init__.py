"""cvmdeploy CLI commands"""
