from django.db import models


class Dealer(models.Model):
    dealer_id = models.BigAutoField(primary_key=True)

    business_name = models.CharField(max_length=255)
    contact_name = models.CharField(max_length=150, blank=True, default="")

    phone_number = models.CharField(max_length=20)
    email = models.EmailField(unique=True)

    city = models.CharField(max_length=100)
    address_line1 = models.CharField(max_length=255, blank=True, default="")

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "dealer"

    def __str__(self):
        return self.business_name
