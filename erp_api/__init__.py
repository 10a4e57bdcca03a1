"""
ERP backend service.

JSON endpoints over PostgreSQL for:
- Sales orders, invoices and customer payments
- Double-entry accounting and financial reports
- HR: employees, leave, attendance (ESSL biometric devices), payroll
- Inventory, procurement and vendor bills
- CRM leads and customers
"""
