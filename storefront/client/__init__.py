"""
Клиентская часть сверки оплаты.

Работает на стороне мобильного приложения и общается только с Order API.
"""
