# Portal screens are served by the front end; this project hosts the record
# stores and the reporting engine only.
urlpatterns = []
