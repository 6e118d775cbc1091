# file: aqi_pipeline/cities.py

# Built-in city table. Station ids are WAQI feed ids (queried as /feed/@<id>/).
# Override with AQI_CITIES_FILE pointing to a JSON list in the same shape.

DEFAULT_CITIES = [
    {
        "slug": "delhi",
        "name": "Delhi",
        "state": "Delhi NCR",
        "population": 32_000_000,
        "coordinates": {"lat": 28.6139, "lng": 77.2090},
        "stations": [
            {"id": 2553, "name": "Anand Vihar", "area": "Anand Vihar"},
            {"id": 10118, "name": "ITI Shahdra", "area": "Jhilmil"},
            {"id": 10112, "name": "PGDAV College", "area": "Sriniwaspuri"},
            {"id": 2556, "name": "RK Puram", "area": "RK Puram"},
            {"id": 10124, "name": "Pusa", "area": "Pusa"},
            {"id": 10121, "name": "Sonia Vihar", "area": "Sonia Vihar"},
            {"id": 10705, "name": "JLN Stadium", "area": "JLN Stadium"},
            {"id": 10122, "name": "Lodhi Road", "area": "Lodhi Road"},
            {"id": 3715, "name": "ITO", "area": "ITO"},
            {"id": 2554, "name": "Mandir Marg", "area": "Mandir Marg"},
        ],
    },
    {
        "slug": "mumbai",
        "name": "Mumbai",
        "state": "Maharashtra",
        "population": 21_000_000,
        "coordinates": {"lat": 19.0760, "lng": 72.8777},
        "stations": [
            {"id": 13715, "name": "Bandra Kurla Complex", "area": "BKC"},
            {"id": 11962, "name": "Colaba", "area": "Colaba"},
            {"id": 13709, "name": "Mazgaon", "area": "Mazgaon"},
            {"id": 13706, "name": "Siddharth Nagar-Worli", "area": "Worli"},
            {"id": 12464, "name": "Sion", "area": "Sion"},
            {"id": 12454, "name": "Kurla", "area": "Kurla"},
            {"id": 12459, "name": "Powai", "area": "Powai"},
            {"id": 13803, "name": "Malad West", "area": "Malad"},
        ],
    },
    {
        "slug": "kolkata",
        "name": "Kolkata",
        "state": "West Bengal",
        "population": 15_000_000,
        "coordinates": {"lat": 22.5726, "lng": 88.3639},
        "stations": [
            {"id": 12746, "name": "Ballygunge", "area": "Ballygunge"},
            {"id": 12458, "name": "Jadavpur", "area": "Jadavpur"},
            {"id": 9068, "name": "Victoria", "area": "Victoria"},
            {"id": 12457, "name": "Fort William", "area": "Fort William"},
            {"id": 12467, "name": "Rabindra Sarobar", "area": "Rabindra Sarobar"},
            {"id": 12745, "name": "Bidhannagar", "area": "Salt Lake"},
        ],
    },
    {
        "slug": "bangalore",
        "name": "Bangalore",
        "state": "Karnataka",
        "population": 13_000_000,
        "coordinates": {"lat": 12.9716, "lng": 77.5946},
        "stations": [
            {"id": 8190, "name": "BTM Layout", "area": "BTM Layout"},
            {"id": 11276, "name": "Jayanagar 5th Block", "area": "Jayanagar"},
            {"id": 11428, "name": "Hebbal", "area": "Hebbal"},
            {"id": 11293, "name": "Silk Board", "area": "Silk Board"},
            {"id": 8686, "name": "City Railway Station", "area": "Majestic"},
            {"id": 3758, "name": "Peenya", "area": "Peenya"},
        ],
    },
    {
        "slug": "chennai",
        "name": "Chennai",
        "state": "Tamil Nadu",
        "population": 11_000_000,
        "coordinates": {"lat": 13.0827, "lng": 80.2707},
        "stations": [
            {"id": 13739, "name": "Kodungaiyur", "area": "Kodungaiyur"},
            {"id": 13740, "name": "Arumbakkam", "area": "Arumbakkam"},
            {"id": 8185, "name": "Manali", "area": "Manali"},
            {"id": 11279, "name": "Velachery Res. Area", "area": "Velachery"},
            {"id": 13737, "name": "Royapuram", "area": "Royapuram"},
        ],
    },
    {
        "slug": "hyderabad",
        "name": "Hyderabad",
        "state": "Telangana",
        "population": 10_000_000,
        "coordinates": {"lat": 17.3850, "lng": 78.4867},
        "stations": [
            {"id": 8677, "name": "Zoo Park", "area": "Bahadurpura West"},
            {"id": 8182, "name": "Sanathnagar", "area": "Sanathnagar"},
            {"id": 14135, "name": "New Malakpet", "area": "Malakpet"},
            {"id": 14125, "name": "Somajiguda", "area": "Somajiguda"},
            {"id": 11284, "name": "Central University", "area": "Gachibowli"},
        ],
    },
    {
        "slug": "ahmedabad",
        "name": "Ahmedabad",
        "state": "Gujarat",
        "population": 8_000_000,
        "coordinates": {"lat": 23.0225, "lng": 72.5714},
        "stations": [
            {"id": 13749, "name": "Gyaspur", "area": "Gyaspur"},
            {"id": 8192, "name": "Maninagar", "area": "Maninagar"},
            {"id": 13748, "name": "Rakhial", "area": "Rakhial"},
            {"id": 13746, "name": "SAC ISRO Satellite", "area": "Satellite"},
            {"id": 13750, "name": "Chandkheda", "area": "Chandkheda"},
        ],
    },
    {
        "slug": "lucknow",
        "name": "Lucknow",
        "state": "Uttar Pradesh",
        "population": 3_500_000,
        "coordinates": {"lat": 26.8467, "lng": 80.9462},
        "stations": [
            {"id": 8673, "name": "Lalbagh", "area": "Lalbagh"},
            {"id": 3845, "name": "Central School", "area": "Central School"},
            {"id": 12468, "name": "Gomti Nagar", "area": "Gomti Nagar"},
            {"id": 8188, "name": "Talkatora", "area": "Talkatora"},
        ],
    },
    {
        "slug": "patna",
        "name": "Patna",
        "state": "Bihar",
        "population": 2_500_000,
        "coordinates": {"lat": 25.5941, "lng": 85.1376},
        "stations": [
            {"id": 12742, "name": "Samanpura", "area": "Samanpura"},
            {"id": 12744, "name": "Muradpur", "area": "Muradpur"},
            {"id": 8674, "name": "IGSC Planetarium Complex", "area": "Planetarium"},
            {"id": 12888, "name": "DRM Office Danapur", "area": "Danapur"},
        ],
    },
    {
        "slug": "agra",
        "name": "Agra",
        "state": "Uttar Pradesh",
        "population": 1_800_000,
        "coordinates": {"lat": 27.1767, "lng": 78.0081},
        "stations": [
            {"id": 8186, "name": "Sanjay Palace", "area": "Sanjay Palace"},
            {"id": 13873, "name": "Rohta", "area": "Rohta"},
            {"id": 13754, "name": "Manoharpur", "area": "Manoharpur"},
            {"id": 13752, "name": "Shahjahan Garden", "area": "Shahjahan Garden"},
        ],
    },
]
