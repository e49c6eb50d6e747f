"""
Municipal Budget Portal - Source Package

Budget data entry portal for municipalities: administrators manage
accounts and municipalities, employees enter multi-year revenue and
expense figures, check budget balance and exchange spreadsheets.

DESIGN PRINCIPLES:
1. Storage is injected and swappable
2. Domain errors are typed; the portal turns them into outcomes
3. Rubrics are a closed taxonomy, never free text
4. Verification codes never leave the notifier channel
5. Every significant action is audited
"""

__version__ = "1.0.0"
__author__ = "Municipal Budget Platform Team"
